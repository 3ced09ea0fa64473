"""
Vision LLM providers for GigSight.
"""
