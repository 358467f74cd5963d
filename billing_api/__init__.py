"""HTTP backend for the billing manager: auth delegated to a hosted provider, invoices per user."""
