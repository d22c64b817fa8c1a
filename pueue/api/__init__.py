"""
HTTP API for submitting and inspecting jobs.
"""
