"""
Arena trading cycle stages.

Per agent, in handoff order:
1. MarketDataAgent - ticker prices (shared by all agents in a cycle)
2. PositionLedger - open positions, exposure, SL/TP sweep
3. DecisionAgent - collaborator call, validated into the decision union
4. RiskGate - exposure / duplicate / price checks
5. ExecutionAgent - order placement, ledger update after fills
6. BalanceReconciler - paper summation or live exchange balance
7. ObservabilityAgent - cycle and trade audit files

The Orchestrator runs the cycle.
"""
