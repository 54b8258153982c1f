"""Guest photo and video collection for event albums over WhatsApp."""
