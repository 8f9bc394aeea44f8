import asyncio
import datetime
import json

from django.core.management.base import BaseCommand, CommandError

from tasks.ai_engine import EngineConfig, MalformedStructuredSyntax, TaskQueryEngine
from tasks.serializers import ChatResultSerializer, RankedResultSerializer, load_tasks


class Command(BaseCommand):
    help = "Rank tasks from a JSON file for a query, optionally asking the chat model."

    def add_arguments(self, parser):
        parser.add_argument("tasks_file", help="JSON file holding a list of task records")
        parser.add_argument("query", help="Query, e.g. 'p1 #work report'")
        parser.add_argument("--today", help="Reference date (YYYY-MM-DD)")
        parser.add_argument("--limit", type=int, help="Maximum number of tasks to print")
        parser.add_argument("--chat", action="store_true", help="Ask the chat model about the results")
        parser.add_argument(
            "--offline",
            action="store_true",
            help="Do not build OpenAI clients (deterministic keywords only)",
        )

    def handle(self, *args, **options):
        try:
            with open(options["tasks_file"], encoding="utf-8") as fh:
                records = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f"Could not read tasks: {e}")
        if not isinstance(records, list):
            raise CommandError("The tasks file must contain a JSON list")

        today = None
        if options["today"]:
            try:
                today = datetime.date.fromisoformat(options["today"])
            except ValueError:
                raise CommandError(f"Invalid --today date: {options['today']}")

        overrides = {}
        if options["limit"]:
            overrides["max_recommendations"] = options["limit"]
        config = EngineConfig.from_settings(overrides)
        engine = TaskQueryEngine(config=config, skip_ai_init=options["offline"])
        tasks = load_tasks(records)

        try:
            if options["chat"]:
                result = asyncio.run(
                    engine.chat(tasks, options["query"], today=today, on_chunk=self._echo)
                )
                self.stdout.write("")
                payload = ChatResultSerializer(result).data
            else:
                result = engine.rank(tasks, options["query"], today=today)
                payload = RankedResultSerializer(result).data
                if options["limit"]:
                    payload["tasks"] = payload["tasks"][:options["limit"]]
        except MalformedStructuredSyntax as e:
            raise CommandError(str(e))

        self.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))

    def _echo(self, text):
        self.stderr.write(text, ending="")
