"""Application Lifecycle Reconciler (ALR).

Drives a deployable application on a remote platform control-plane towards a
declared configuration:
 - change classification (in-place update / restart / restage / replace)
 - route mapping and service binding reconciliation
 - blue-green rollouts with a lockstep scaling exchange
 - crash-recoverable cleanup of deposed (superseded) applications

The reconciler never owns a state store; callers persist the returned
`ResourceState` and hand it back on the next pass.
"""
