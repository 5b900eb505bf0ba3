"""Cluster coordination: the coordinator, the worker agent, their messages and join tokens."""