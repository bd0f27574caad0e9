"""
Core - conversation loop, retry, permission gate and tool execution.
"""
