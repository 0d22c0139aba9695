"""Property-based tests for Lookout.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test modules:
- test_sampling_properties: trace-consistency of sampling decisions
- test_wire_properties: envelope, baggage and rate-limit header parsing
- test_scope_properties: breadcrumb bounds and normalization output
"""
