"""
Core library for the NetworkPolicy test planner
"""
