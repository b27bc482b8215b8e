"""
Asynchronous audit pipeline: queues, workers, stage handlers and control loops.
"""
