"""DynamoDB single-table access: client setup, typed errors, retries, cursors, and the table wrapper."""
