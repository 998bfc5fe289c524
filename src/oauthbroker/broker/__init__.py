# Authorization-flow core
# Created: 2026-10-19
#
# Stores (clients, sessions, codes, tokens), the upstream provider client and
# the BrokerServer flow orchestrator. No HTTP types in here.
