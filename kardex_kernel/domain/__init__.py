"""Domain layer - clock, DTOs and collaborator interfaces."""
