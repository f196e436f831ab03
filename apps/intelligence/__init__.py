"""
Intelligence app.

Classification providers: extraction, summarization, embedding, routing
validation and policy review of incident reports.
"""
