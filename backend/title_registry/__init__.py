"""Title Registry - land title application, approval, dispute and certification core."""
