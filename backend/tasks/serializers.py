# tasks/serializers.py

from rest_framework import serializers
from .ai_engine.types import Task
import logging

logger = logging.getLogger(__name__)


class TaskRecordSerializer(serializers.Serializer):
    """
    Validates one raw task record from the task source and builds a Task.

    Records arrive as JSON-like dicts; dates are ISO strings and priority is
    1..4 or null.
    """

    id = serializers.CharField()
    text = serializers.CharField(allow_blank=True)
    status = serializers.CharField(required=False, allow_null=True, allow_blank=True, trim_whitespace=False)
    status_category = serializers.CharField(required=False, allow_null=True)
    priority = serializers.IntegerField(required=False, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)
    created_date = serializers.DateField(required=False, allow_null=True)
    completed_date = serializers.DateField(required=False, allow_null=True)
    folder = serializers.CharField(required=False, allow_blank=True, default="")
    tags = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    source_path = serializers.CharField(required=False, allow_blank=True, default="")
    line_number = serializers.IntegerField(required=False, allow_null=True)

    def validate_priority(self, value):
        if value is not None and not (1 <= value <= 4):
            raise serializers.ValidationError("priority must be an integer between 1 and 4, or null.")
        return value

    def validate_tags(self, value):
        tags = []
        for tag in value:
            cleaned = tag.strip().lstrip("#")
            if cleaned and cleaned not in tags:
                tags.append(cleaned)
        return tags

    def create(self, validated_data):
        """Build an in-memory Task; nothing is persisted."""
        data = dict(validated_data)
        data["tags"] = tuple(data.get("tags") or ())
        return Task(**data)


def load_tasks(records):
    """Validate a list of raw records. Invalid records are skipped and logged."""
    tasks = []
    for position, record in enumerate(records):
        serializer = TaskRecordSerializer(data=record)
        if serializer.is_valid():
            tasks.append(serializer.save())
        else:
            logger.warning(f"Skipping task record #{position}: {serializer.errors}")
    return tasks


class ScoreVectorSerializer(serializers.Serializer):
    relevance = serializers.FloatField()
    due_date = serializers.FloatField()
    priority = serializers.FloatField()
    status = serializers.FloatField()
    final = serializers.FloatField()


class RankedTaskSerializer(serializers.Serializer):
    """Read-only view of a ranked task together with its score vector."""

    id = serializers.CharField()
    text = serializers.CharField()
    status = serializers.CharField(allow_null=True)
    priority = serializers.IntegerField(allow_null=True)
    due_date = serializers.DateField(allow_null=True)
    folder = serializers.CharField()
    tags = serializers.ListField(child=serializers.CharField())
    score = serializers.SerializerMethodField()

    def get_score(self, task):
        vector = self.context.get("scores", {}).get(task.id)
        return ScoreVectorSerializer(vector).data if vector is not None else None


class UsageSerializer(serializers.Serializer):
    prompt_tokens = serializers.IntegerField()
    completion_tokens = serializers.IntegerField()
    total_tokens = serializers.IntegerField()
    estimated_cost = serializers.FloatField()
    model = serializers.CharField()
    is_estimated = serializers.BooleanField()


class RankedResultSerializer(serializers.Serializer):
    tasks = serializers.SerializerMethodField()
    message = serializers.CharField(allow_null=True)
    provenance = serializers.CharField(source="intent.provenance")
    keywords = serializers.ListField(child=serializers.CharField(), source="intent.keywords.expanded")

    def get_tasks(self, result):
        return RankedTaskSerializer(result.tasks, many=True, context={"scores": result.scores}).data


class ChatResultSerializer(serializers.Serializer):
    reply = serializers.CharField()
    tasks = serializers.SerializerMethodField()
    degraded = serializers.BooleanField()
    warning = serializers.CharField(allow_null=True)
    usage = UsageSerializer(allow_null=True)
    error_code = serializers.CharField(allow_null=True)
    error_message = serializers.CharField(allow_null=True)

    def get_tasks(self, result):
        data = RankedTaskSerializer(result.tasks, many=True, context={"scores": result.scores}).data
        for position, item in enumerate(data, start=1):
            item["display_position"] = position
        return data
