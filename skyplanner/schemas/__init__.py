# Sky Planner API schemas
