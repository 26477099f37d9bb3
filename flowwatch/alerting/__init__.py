"""
FlowWatch Alerting.

Components:
- schemas: Preferences, alert records, push messages, run tally
- classifier: Return-period matching and severity
- quiet_hours: Per-user quiet window gate
- dedup: History-backed duplicate suppression
- notifier: Push gateway delivery
- dispatcher: Render, send and record an alert
- pipeline: Orchestrates a monitoring run across users
"""
