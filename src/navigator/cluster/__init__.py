"""Cluster reconciliation: sub-resource controls, planner, actions and controller."""
