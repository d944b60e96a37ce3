"""Resonance - audience resonance research

Simple CLI that runs one research task to completion in process memory.
"""

import argparse
import asyncio
import json
import sys

from resonance.agents.orchestrator import ProgressionOrchestrator
from resonance.models.task import ResearchTask
from resonance.services.progress import report_progress
from resonance.services.task_store import InMemoryTaskStore


async def run_research(title: str, scope: str, parameters: dict, max_steps: int = 50) -> ResearchTask:
    """Create a task and advance it until it is terminal."""
    print(f"Research: {title}")
    print("-" * 50)

    store = InMemoryTaskStore()
    orchestrator = ProgressionOrchestrator(store)
    task = await store.create(
        ResearchTask(
            owner_id="cli",
            title=title,
            description=scope,
            clarified_scope=scope,
            parameters=parameters,
        )
    )

    for _ in range(max_steps):
        task = await orchestrator.advance(task.id)
        report = report_progress(task)
        print(f"[{report.progress:3d}%] {report.status_message}")
        if task.is_terminal:
            break

    if task.final_report is not None:
        report = task.final_report
        print(f"\n{'='*50}")
        print("REPORT:")
        print(f"{'='*50}")
        print(report.executive_summary)
        for finding in report.resonance_findings:
            print(f"\n- {finding.theme}: {finding.description}")
        for note in report.coverage_notes:
            print(f"\n[!] {note}")
    elif task.error_message:
        print(f"\n[!] Error: {task.error_message}")
    return task


def main():
    parser = argparse.ArgumentParser(description="Resonance research CLI")
    parser.add_argument("--title", "-t", required=True, help="Short research title")
    parser.add_argument("--scope", "-s", required=True, help="Clarified research scope")
    parser.add_argument("--parameters", "-p", default="{}", help="Parameters as a JSON object")

    args = parser.parse_args()
    try:
        parameters = json.loads(args.parameters)
    except json.JSONDecodeError as exc:
        parser.error(f"--parameters is not valid JSON: {exc.msg}")
    if not isinstance(parameters, dict):
        parser.error("--parameters must be a JSON object")

    task = asyncio.run(run_research(args.title, args.scope, parameters))
    sys.exit(0 if task.status.value == "completed" else 1)


if __name__ == "__main__":
    main()
