"""Submission ingestion: attachment validation and message composition."""

from .attachments import AttachmentProcessor, to_api_payload
from .composer import MessageComposer

__all__ = ["AttachmentProcessor", "MessageComposer", "to_api_payload"]
