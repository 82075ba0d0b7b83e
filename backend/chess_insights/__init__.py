"""
Chess game sync engine and analysis pipeline.
"""
