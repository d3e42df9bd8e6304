"""Core configuration, logging, errors and session storage"""
