"""Data service layer: actions, population, transformation, brokers"""
