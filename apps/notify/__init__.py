"""
Delivery app.

Best-effort delivery of completed incidents to email and spreadsheet sinks.
"""
