"""Redis read cache"""
