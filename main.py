#!/usr/bin/env python3
"""
Orchestration CLI

Runs a request through the orchestrator, or executes an approved todo list.

Usage:
    python main.py "request"
    python main.py --approve plan.json --input "initial input"

Examples:
    python main.py "Summarize this article and translate it to French: ..."
    python main.py "What agents are available?" --json
    python main.py --approve todos.json --input "Quarterly report text..."
    python main.py "Write a product description" --graph
"""
import argparse
import json
import sys

from config import settings
from orchestration import Task, tasks_to_graph
from orchestration.orchestrator import get_orchestrator
from orchestration.types import ExecutionType


def print_progress(task: Task, status: str) -> None:
    icons = {"executing": "⏳", "completed": "✅", "failed": "❌"}
    print(f"{icons.get(status, '•')} {task.title}", file=sys.stderr)


def print_todos(todos: list[dict]) -> None:
    for index, todo in enumerate(todos, 1):
        status = todo.get("status", "pending")
        print(f"\n{index}. {todo.get('title')} [{status}]")
        print(f"   Agent: {todo.get('agentId')}")
        if todo.get("description"):
            print(f"   {todo['description']}")
        if todo.get("dependencies"):
            print(f"   Depends on: {', '.join(todo['dependencies'])}")


def run_request(request: str, output_json: bool = False, show_graph: bool = False) -> int:
    orchestrator = get_orchestrator()
    result = orchestrator.process_request(request, progress_callback=print_progress)

    if output_json:
        print(json.dumps(result, indent=2, default=str))
        return 0 if result["success"] else 1

    if not result["success"]:
        print(f"❌ Error: {result['error']}")
        return 1

    data = result["data"]
    execution_type = data["executionType"]
    print(f"Complexity: {data['complexity']:.2f} | Execution: {execution_type}")
    print("=" * 60)

    if execution_type in (ExecutionType.GUIDANCE.value, ExecutionType.DIRECT.value):
        if data.get("agentUsed"):
            print(f"Agent: {data['agentUsed']}\n")
        response = data.get("response")
        print(response if isinstance(response, str) else json.dumps(response, indent=2))
    elif execution_type == ExecutionType.TODO_REQUIRED.value:
        print(data.get("message", "Plan created"))
        print_todos(data.get("todos", []))
        if show_graph:
            todos = [Task.from_dict(t) for t in data.get("todos", [])]
            print("\n" + json.dumps(tasks_to_graph(todos), indent=2))
    else:
        print_todos(data.get("todos", []))
        print("\n--- Final output ---")
        print(data.get("finalOutput"))
    return 0


def run_approved(plan_path: str, initial_input: str, output_json: bool = False) -> int:
    try:
        with open(plan_path, encoding="utf-8") as f:
            plan = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Error: could not read plan {plan_path}: {e}")
        return 1

    todos = plan.get("todos", []) if isinstance(plan, dict) else plan
    result = get_orchestrator().execute_approved(todos, initial_input, print_progress)

    if output_json:
        print(json.dumps(result, indent=2, default=str))
        return 0 if result["success"] else 1

    if result.get("data"):
        print_todos(result["data"].get("todos", []))
    if not result["success"]:
        print(f"\n❌ Error: {result['error']}")
        return 1
    print("\n--- Final output ---")
    print(result["data"].get("finalOutput"))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Multi-agent task orchestration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py "Summarize this text and translate it to French: ..."
  python main.py "What can you do?" --json
  python main.py --approve todos.json --input "text to process"
        """
    )

    parser.add_argument("request", nargs="?", help="Natural-language request")
    parser.add_argument("--approve", metavar="PLAN", help="Execute an approved todo list (JSON file)")
    parser.add_argument("--input", dest="initial_input", default="", help="Initial input for --approve")
    parser.add_argument("--graph", action="store_true", help="Print the plan as a node/edge graph")
    parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args()

    missing = settings.validate()
    if missing:
        print(f"❌ Error: missing configuration: {', '.join(missing)}")
        print("Set the environment variables or add them to .env")
        sys.exit(1)

    if args.approve:
        sys.exit(run_approved(args.approve, args.initial_input, output_json=args.json))
    elif args.request:
        sys.exit(run_request(args.request, output_json=args.json, show_graph=args.graph))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
