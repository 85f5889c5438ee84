"""
============================================================================
Project Margin DCA v1.0.0 - Collaborator Contracts and Simulations
============================================================================

accounts:   account scope and batch instruction value types
interfaces: abstract margin protocol, oracle, token ledger and host contracts
simulated:  in-process implementations of those contracts
sandbox:    a coordinator wired over the simulated collaborators
============================================================================
"""
