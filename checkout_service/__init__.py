"""
Affiliate checkout service: cart, role-based pricing, checkout state machine,
order lifecycle and commission attribution on top of the remote platform API.
"""
