"""Serializer fields shared across apps."""

from rest_framework import serializers


class BranchIdField(serializers.Field):
    """Accept a branch reference and normalise it to a single integer id.

    Clients send the destination either as a scalar (``3`` or ``"3"``) or
    wrapped in a one-element list (``[3]``). Empty values map to ``None``.
    """

    default_error_messages = {
        "invalid": "Branch must be a single branch id.",
        "multiple": "Only one branch may be given.",
    }

    def to_internal_value(self, data):
        if isinstance(data, (list, tuple)):
            if len(data) > 1:
                self.fail("multiple")
            data = data[0] if data else None
        if data is None or data == "":
            return None
        if isinstance(data, bool):
            self.fail("invalid")
        try:
            value = int(str(data).strip())
        except (TypeError, ValueError):
            self.fail("invalid")
        if value <= 0:
            self.fail("invalid")
        return value

    def to_representation(self, value):
        return value
