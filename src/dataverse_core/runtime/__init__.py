"""Runtime concerns: retry policies and observability."""
