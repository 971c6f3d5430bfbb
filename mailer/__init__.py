"""mailer/ -- Invitation delivery (SendGrid, or the log in development)."""
