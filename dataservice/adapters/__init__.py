"""Storage adapters"""
