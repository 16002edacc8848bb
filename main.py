"""Deep Research - command-line client

Runs one research request against a running server and prints progress.
"""

import argparse
import asyncio
import sys

from app.client.reducer import ResearchView
from app.client.research_client import ResearchClient
from app.models.schemas import Clarification


class ProgressPrinter:
    """Prints each activity state and source once, as views arrive."""

    def __init__(self):
        self._seen_activities: set[tuple[str, str]] = set()
        self._source_count = 0

    def __call__(self, view: ResearchView) -> None:
        for activity in view.activities:
            key = (activity.id, activity.status)
            if key in self._seen_activities:
                continue
            self._seen_activities.add(key)
            marker = {"pending": "~", "complete": "+", "warning": "!", "error": "x"}[activity.status]
            print(f"  [{marker}] {activity.type}: {activity.message}")
            if activity.details:
                print(f"      {activity.details}")

        for source in view.sources[self._source_count:]:
            print(f"      source: {source.title or source.url} ({source.url})")
        self._source_count = len(view.sources)


async def run_research(topic: str, server: str, answers: list[tuple[str, str]]) -> int:
    client = ResearchClient(server)
    print(f"Research topic: {topic}")
    print("-" * 50)

    if answers:
        clarifications = [
            Clarification(id=str(i), text=question, answer=answer)
            for i, (question, answer) in enumerate(answers, 1)
        ]
    else:
        questions = await client.generate_questions(topic)
        print(f"\n[*] Clarifying questions ({len(questions)}):")
        for i, q in enumerate(questions, 1):
            print(f"  {i}. {q.text}")
        clarifications = [Clarification(id=q.id, text=q.text) for q in questions]

    print("\n[*] Researching...")
    view = await client.research(topic, clarifications, on_update=ProgressPrinter())

    if view.research_state == "error":
        print("\n[!] Research failed")
        return 1

    print(f"\n{'=' * 50}")
    print("REPORT:")
    print(f"{'=' * 50}")
    report = view.report
    if report is None:
        print("(no report content)")
    else:
        print(report.content or report.introduction or report.title)
    print(f"\nSources: {len(view.sources)}")
    return 0


def _answer_pair(value: str) -> tuple[str, str]:
    question, sep, answer = value.partition("=")
    if not sep or not question.strip():
        raise argparse.ArgumentTypeError("expected QUESTION=ANSWER")
    return question.strip(), answer.strip()


def main():
    parser = argparse.ArgumentParser(description="Deep Research client")
    parser.add_argument("--topic", "-t", required=True, help="Research topic")
    parser.add_argument(
        "--server", "-s", default="http://localhost:8000", help="API base url"
    )
    parser.add_argument(
        "--answer",
        "-a",
        action="append",
        type=_answer_pair,
        default=[],
        metavar="QUESTION=ANSWER",
        help="Clarifying question with its answer (repeatable); skips question generation",
    )

    args = parser.parse_args()

    sys.exit(asyncio.run(run_research(args.topic, args.server, args.answer)))


if __name__ == "__main__":
    main()
