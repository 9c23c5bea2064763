"""HTTP surface"""
