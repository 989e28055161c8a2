"""REST API for achievement-sync"""
