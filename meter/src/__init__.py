"""
Energy-accounting daemon package for Alpha-ESS hybrid inverters.

Polls cumulative energy counters and instantaneous power readings from the
inverter via Modbus TCP, keeps daily and lifetime accounting figures in a
local state store, and derives self-consumption, self-sufficiency and income.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""
