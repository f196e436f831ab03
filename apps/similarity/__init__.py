"""
Similarity index app.

Stores embeddings of completed incidents and finds prior incidents that
resemble a new report.
"""
