"""Payment provider integration used for refunds."""
