"""Orchestration state machine (LangGraph).

Import from the submodules directly (``manowarAgent.graph.builder``,
``manowarAgent.graph.state``) to keep package import side-effect free.
"""
