"""
Streaming analysis pipeline: result types, events, aggregation, per-region
analysis and the orchestrator that ties them together.
"""
