"""
Orchestration Package

Task lifecycle components:
- Plan generation from free-form intent
- Sequential step execution against the tool registry
- Task state machine and final summarization
- Task, step and scraped-data persistence
"""
