"""
SQL Broker - role-governed query execution service
"""
