"""
Post-call analysis of recent conversations.
"""
