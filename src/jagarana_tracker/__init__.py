"""Progress tracker for the Jagarana night: mala rounds, reflections, quiz, meditation and certificate."""
