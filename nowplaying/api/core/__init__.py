"""Core configuration, logging and dependency wiring"""
