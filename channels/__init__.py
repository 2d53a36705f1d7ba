"""
Outbound email for the pipeline.

- email_transport: delivery boundary (Resend API, in-memory)
- email_templates: HTML bodies for customer and admin mail
- mailer: sender identity, admin address, success → id / failure → raise
"""
