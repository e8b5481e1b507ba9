"""Room domain logic: state rules, prompt pipeline and listener fan-out."""
