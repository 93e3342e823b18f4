"""Quick Trace Annotator (QTA): annotate simulator trace logs with source lines."""
