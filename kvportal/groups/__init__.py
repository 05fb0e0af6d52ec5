"""Groups module - group requests, approval and public group pages."""
