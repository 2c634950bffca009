"""
Call records, outbound dispatch and the manual call API.

Models are not re-exported: importing them maps the ORM classes.
"""
