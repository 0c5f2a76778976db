"""Description bodies for created records, rendered as Atlassian Document Format."""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Tuple

from .models import CustomerSnapshot


@dataclass(frozen=True)
class StructuredDocument:
    """An ordered sequence of paragraphs."""

    paragraphs: Tuple[str, ...]

    def to_adf(self) -> Dict[str, Any]:
        return {
            "type": "doc",
            "version": 1,
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": text}]}
                for text in self.paragraphs
            ],
        }


def build_description(
    snapshot: CustomerSnapshot, start_date: date, end_date: date
) -> StructuredDocument:
    """Render the customer and engagement details, one labeled line per paragraph."""
    lines = (
        ("Customer", snapshot.name),
        ("Email", snapshot.email),
        ("Phone", snapshot.phone),
        ("Company Address", snapshot.address),
        ("Amount Paid", snapshot.formatted_amount),
        ("Start Date", start_date.isoformat()),
        ("End Date", end_date.isoformat()),
    )
    return StructuredDocument(tuple(f"{label}: {value}" for label, value in lines))


def build_confirmation(task_url: str) -> StructuredDocument:
    """Customer-facing acknowledgement that points at the internal task."""
    return StructuredDocument(
        (
            "Your order has been received. Our team has created an internal task to begin work.",
            f"Internal Task: {task_url}",
        )
    )
