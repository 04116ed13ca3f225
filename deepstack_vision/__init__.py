"""DeepStack vision client: Docker lifecycle management and vision API adapter."""
